"""Slot allocation - pure token math over a clinic session window"""

from .allocator import SlotPlan, TokenSlot, compute_slots, session_capacity

__all__ = ["SlotPlan", "TokenSlot", "compute_slots", "session_capacity"]
