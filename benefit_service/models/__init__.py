from benefit_service.models.benefit import Benefit

__all__ = ['Benefit']
