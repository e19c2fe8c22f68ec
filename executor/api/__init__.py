from executor.api.server import ExecutorComponents, build_components, create_app

__all__ = ["ExecutorComponents", "build_components", "create_app"]
