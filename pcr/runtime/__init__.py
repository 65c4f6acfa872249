from .docker_runtime import ContainerRuntime, ExecResult, Instance, node_number

__all__ = ["ContainerRuntime", "ExecResult", "Instance", "node_number"]
