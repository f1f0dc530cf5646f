from __future__ import annotations

__all__ = ["HostDocument", "MutationRecord", "contains", "element_nodes"]

from overlay_service.dom.document import HostDocument, MutationRecord, contains, element_nodes
