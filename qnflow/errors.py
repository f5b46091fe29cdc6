class ConfigurationError(RuntimeError):
    """
    Fatal set-up error: the correction network cannot be built consistently.

    Raised at initialisation time only (unresolved reference configurations,
    duplicated step or configuration names, wrong detector ownership, ...).
    Per-event degradations never raise.
    """
