"""CRM domain: contacts, interaction log and coordination records.

Exports are loaded lazily because the services depend on the engine,
which in turn imports the CRM schemas.
"""

from __future__ import annotations

from importlib import import_module

__all__ = [
    "Contact",
    "ContactNotFoundError",
    "ContactStore",
    "Handoff",
    "HandoffNotFoundError",
    "HandoffResult",
    "HandoffService",
    "HandoffStatus",
    "HandoffStore",
    "HandoffUrgency",
    "Interaction",
    "InteractionLog",
    "InteractionResult",
    "InteractionService",
]


_EXPORT_TO_MODULE = {
    "Contact": "cortexmcp.crm.schemas",
    "ContactNotFoundError": "cortexmcp.crm.schemas",
    "Handoff": "cortexmcp.crm.schemas",
    "HandoffNotFoundError": "cortexmcp.crm.schemas",
    "HandoffStatus": "cortexmcp.crm.schemas",
    "HandoffUrgency": "cortexmcp.crm.schemas",
    "Interaction": "cortexmcp.crm.schemas",
    "ContactStore": "cortexmcp.crm.contacts",
    "InteractionLog": "cortexmcp.crm.interactions",
    "InteractionResult": "cortexmcp.crm.interactions",
    "InteractionService": "cortexmcp.crm.interactions",
    "HandoffResult": "cortexmcp.crm.handoffs",
    "HandoffService": "cortexmcp.crm.handoffs",
    "HandoffStore": "cortexmcp.crm.handoffs",
}


def __getattr__(name: str):
    module_name = _EXPORT_TO_MODULE.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module = import_module(module_name)
    return getattr(module, name)
