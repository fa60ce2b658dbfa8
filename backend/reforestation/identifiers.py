import secrets

HID_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_uid(prefix: str) -> str:
    return f"{prefix}_{secrets.token_hex(12)}"


def generate_hid(length: int = 6) -> str:
    return "".join(secrets.choice(HID_ALPHABET) for _ in range(length))


def generate_idempotency_key() -> str:
    return generate_uid("idem")
