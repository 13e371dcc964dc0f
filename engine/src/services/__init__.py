from engine.src.services import artifacts, ports, proxy, supervisor
from engine.src.services.artifacts import ArtifactNotFoundError, ArtifactExtractError
from engine.src.services.ports import PortInUseError, SelfTerminationError
from engine.src.services.proxy import ProxyError, SubdomainError
from engine.src.services.supervisor import HealthCheckError, StartupError

__all__ = [
    "artifacts",
    "ports",
    "proxy",
    "supervisor",
    "ArtifactNotFoundError",
    "ArtifactExtractError",
    "PortInUseError",
    "SelfTerminationError",
    "ProxyError",
    "SubdomainError",
    "HealthCheckError",
    "StartupError",
]
