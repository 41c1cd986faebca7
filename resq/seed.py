import logging

from .schemas import MechanicIn

DEFAULT_MECHANICS = {
    "mech-001": MechanicIn(
        name="John Smith",
        phone="555-123-4567",
        rating=4.8,
        specialties=["Emergency Repair", "Towing"],
        status="available",
        current_location=(-74.005, 40.7125),
    ),
    "mech-002": MechanicIn(
        name="Sarah Johnson",
        phone="555-987-6543",
        rating=4.9,
        specialties=["Electrical", "Diagnostics"],
        status="busy",
        current_location=(-74.008, 40.713),
    ),
    "mech-003": MechanicIn(
        name="Mike Wilson",
        phone="555-456-7890",
        rating=4.7,
        specialties=["Tire Service", "Battery Jump"],
        status="available",
        current_location=(-74.0, 40.718),
    ),
}


def seed_mechanics(store) -> int:
    """Load the demo mechanics into an empty store."""
    if store.list_mechanics():
        return 0
    for mechanic_id, mechanic in DEFAULT_MECHANICS.items():
        store.upsert_mechanic(mechanic_id, mechanic)
    logging.info("Seeded %d mechanics", len(DEFAULT_MECHANICS))
    return len(DEFAULT_MECHANICS)
