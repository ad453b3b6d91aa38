class KubeConfigError(RuntimeError):
    """Raised when a custom resource call cannot reach a configured cluster."""
