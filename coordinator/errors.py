"""Coordinator failures."""


class CoordinatorError(Exception):
    """Base exception for coordinator operations"""
    pass


class StaleDescriptorError(CoordinatorError):
    """Deployment descriptor declares a different coordinator public key"""
    pass


class ProcessingError(CoordinatorError):
    """Rebuilt trees or commitments disagree with the ledger"""
    pass
