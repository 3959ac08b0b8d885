"""Host handle shared by probes, file operations and steps."""

from dataclasses import dataclass, field
from pathlib import Path

from .runner import CommandRunner


@dataclass
class Host:
    """
    The machine being provisioned.

    ``root`` prefixes every filesystem path so probes and writers can be
    pointed at a scratch directory; commands always run on the real host
    through ``runner``.
    """

    runner: CommandRunner = field(default_factory=CommandRunner)
    root: Path = Path("/")

    @property
    def dry_run(self) -> bool:
        return self.runner.dry_run

    def path(self, path: str | Path) -> Path:
        """Resolve an absolute host path under the host root."""
        if self.root == Path("/"):
            return Path(path)
        return self.root / str(path).lstrip("/")
