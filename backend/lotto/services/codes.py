import secrets
# no 0/O or 1/I: users read the code back from the signing prompt
ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

def generate_code(length: int = 6, exclude: str | None = None) -> str:
    """Random challenge code; `exclude` guarantees a fresh code differs from the one it replaces."""
    while True:
        code = "".join(secrets.choice(ALPHABET) for _ in range(length))
        if code != exclude:
            return code
