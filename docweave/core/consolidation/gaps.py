"""Documentation gap rules for a consolidated domain."""

from typing import List

from ..models import DomainInsight

_STATE_HINTS = ("state", "status", "machine", "session")
_API_HINTS = ("api", "handler", "controller", "route")
_INTEGRATION_HINTS = ("client", "external", "integration", "provider")


class GapDetector:
    def detect(self, domain: DomainInsight) -> List[str]:
        gaps = []
        file_count = len(domain.files)
        content = domain.content.lower()

        if file_count > 5 and not domain.has_content():
            gaps.append("No documentation content for multi-file domain")
        if file_count > 3 and not domain.diagram:
            gaps.append("No architecture diagram for multi-file domain")
        if file_count > 5 and not domain.related_files:
            gaps.append("No cross-references documented for multi-file domain")

        if self._any_file(domain, _STATE_HINTS) and "state" not in content:
            gaps.append("State-related files may need state machine documentation")
        if self._any_file(domain, _API_HINTS) and "api" not in content and "endpoint" not in content:
            gaps.append("API-related files may need API contract documentation")
        if self._any_file(domain, _INTEGRATION_HINTS) and \
                "integration" not in content and "external" not in content:
            gaps.append("Integration files may need integration point documentation")
        return gaps

    @staticmethod
    def _any_file(domain: DomainInsight, hints) -> bool:
        return any(hint in f.lower() for f in domain.files for hint in hints)


def detect_gaps(domain: DomainInsight) -> List[str]:
    return GapDetector().detect(domain)
