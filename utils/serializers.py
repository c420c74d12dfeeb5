def booking_to_dict(b, owner=None):
    data = {
        "id": b.id,
        "owner_id": b.owner_id,
        "activity_id": b.activity_id,
        "date": b.date.isoformat(),
        "time_slot": b.time_slot,
        "status": b.status.value,
        "notes": b.notes,
        "created_at": b.created_at.isoformat() if b.created_at else None,
        "updated_at": b.updated_at.isoformat() if b.updated_at else None,
    }
    if owner is not None:
        # staff listings show who booked
        data["owner_name"] = owner.full_name
        data["owner_email"] = owner.email
    return data


def activity_to_dict(a):
    return {
        "id": a.id,
        "name": a.name,
        "description": a.description,
        "capacity_per_slot": a.capacity_per_slot,
        "available_slots": list(a.available_slots or []),
        "is_active": a.is_active,
    }
