"""
Restaurant Onboarding.

Draft engine behind the restaurant onboarding wizard:
- Draft Repository - one draft per owner, debounced and serialized saves
- Consistency Engine - every confirmed location in exactly one menu group
- Sharing Manager - collaborator grants with invitation audit records
- Step Controller Contract - validate/save before leaving a wizard step
"""

__version__ = "1.0.0"
