import bcrypt


# bcrypt only reads the first 72 bytes of a password.
BCRYPT_MAX_BYTES = 72


def _encode(password) -> bytes:
    if not isinstance(password, bytes):
        password = str(password).encode("utf-8")
    return password[:BCRYPT_MAX_BYTES]


class BcryptPasswordHasher:
    def __init__(self, rounds: int = 12) -> None:
        self.rounds = max(4, min(31, int(rounds)))

    def hash(self, password: str) -> str:
        return bcrypt.hashpw(_encode(password), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, password: str, hashed_password: str) -> bool:
        if not password or not hashed_password:
            return False
        try:
            return bcrypt.checkpw(_encode(password), hashed_password.encode("utf-8"))
        except ValueError:
            # Malformed stored hash.
            return False
