"""Agent descriptors: where the commands of a stage run."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from pipeliner.exceptions import PipelineValidationError
from pipeliner.pipeline.validators import validate_env


class AgentKind(str, Enum):
    """Execution target of a pipeline or stage.

    Attributes:
        ANY: Any available executor (the host shell).
        NONE: No agent at the pipeline level; every stage declares its own.
        LABEL: Host shell selected by node label.
        DOCKER: A fresh Docker container per command.
        PODMAN: A fresh Podman container per command.
        KUBERNETES: A pod started through ``kubectl``.
    """

    ANY = "any"
    NONE = "none"
    LABEL = "label"
    DOCKER = "docker"
    PODMAN = "podman"
    KUBERNETES = "kubernetes"


#: Agent kinds that require a container image.
CONTAINER_KINDS = frozenset({AgentKind.DOCKER, AgentKind.PODMAN, AgentKind.KUBERNETES})


@dataclass(frozen=True, slots=True)
class Agent:
    """Descriptor of the execution target handed to the backend.

    Attributes:
        kind: Agent kind.
        label: Node label (``label`` agents).
        image: Container image (container agents).
        args: Extra arguments passed to the container runtime.
        environment: Variables set inside the container.
        registry: Registry prefix prepended to ``image`` when set.
        network: Network to attach the container to (Podman).
        namespace: Kubernetes namespace.
        container_name: Kubernetes container name.
        kubeconfig: Path to the kubeconfig file used by ``kubectl``.

    Examples:
        >>> Agent.docker("python:3.12-slim").image
        'python:3.12-slim'
        >>> Agent().kind
        <AgentKind.ANY: 'any'>
    """

    kind: AgentKind = AgentKind.ANY
    label: str | None = None
    image: str | None = None
    args: tuple[str, ...] = ()
    environment: dict[str, str] = field(default_factory=dict)
    registry: str | None = None
    network: str | None = None
    namespace: str = "default"
    container_name: str = "pipeliner"
    kubeconfig: str | None = None

    def __post_init__(self) -> None:
        """Validate agent fields for the selected kind.

        Raises:
            PipelineValidationError: If a required field is missing.
        """
        if self.kind == AgentKind.LABEL and not (self.label and self.label.strip()):
            raise PipelineValidationError("Label agent requires a non-empty 'label'")
        if self.kind in CONTAINER_KINDS and not (self.image and self.image.strip()):
            raise PipelineValidationError(f"{self.kind.value.capitalize()} agent requires a non-empty 'image'")
        if self.kind == AgentKind.KUBERNETES and not self.namespace.strip():
            raise PipelineValidationError("Kubernetes agent requires a non-empty 'namespace'")
        if self.environment:
            validate_env(self.environment, owner=f"{self.kind.value} agent")

    @classmethod
    def any(cls) -> Agent:
        """Return the ``any`` agent."""
        return cls()

    @classmethod
    def with_label(cls, label: str) -> Agent:
        """Return a label-selected agent."""
        return cls(kind=AgentKind.LABEL, label=label)

    @classmethod
    def docker(cls, image: str, **kwargs: object) -> Agent:
        """Return a Docker agent for ``image``."""
        return cls(kind=AgentKind.DOCKER, image=image, **kwargs)  # type: ignore[arg-type]

    @classmethod
    def podman(cls, image: str, **kwargs: object) -> Agent:
        """Return a Podman agent for ``image``."""
        return cls(kind=AgentKind.PODMAN, image=image, **kwargs)  # type: ignore[arg-type]

    @classmethod
    def kubernetes(cls, image: str, **kwargs: object) -> Agent:
        """Return a Kubernetes agent for ``image``."""
        return cls(kind=AgentKind.KUBERNETES, image=image, **kwargs)  # type: ignore[arg-type]

    @property
    def is_container(self) -> bool:
        """Whether commands run inside a container image."""
        return self.kind in CONTAINER_KINDS

    @property
    def full_image(self) -> str | None:
        """Image reference including the registry prefix, if any."""
        if self.image and self.registry:
            return f"{self.registry.rstrip('/')}/{self.image}"
        return self.image


__all__ = [
    "CONTAINER_KINDS",
    "Agent",
    "AgentKind",
]
