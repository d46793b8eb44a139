"""
Snapshot Engine Exceptions
"""


class SnapshotError(Exception):
    """Base class for snapshot rebuild failures"""


class InvalidWindowError(SnapshotError, ValueError):
    """The requested analysis window is empty, inverted or incomplete"""


class RebuildInProgressError(SnapshotError):
    """Another rebuild holds the lease for this organization and snapshot kind"""

    def __init__(self, organization_id: str, kind: str):
        self.organization_id = organization_id
        self.kind = kind
        super().__init__(f"{kind} snapshot rebuild already running for organization {organization_id}")


class LeaseLostError(SnapshotError):
    """The rebuild lease expired or was taken over before the snapshot was published"""

    def __init__(self, organization_id: str, kind: str):
        self.organization_id = organization_id
        self.kind = kind
        super().__init__(f"{kind} rebuild lease lost for organization {organization_id}")


class GenerationConflictError(SnapshotError):
    """Another rebuild already published this generation or a newer one"""

    def __init__(self, organization_id: str, kind: str, generation: int):
        self.organization_id = organization_id
        self.kind = kind
        self.generation = generation
        super().__init__(
            f"{kind} snapshot generation {generation} for organization {organization_id} "
            f"was superseded by a concurrent rebuild"
        )
