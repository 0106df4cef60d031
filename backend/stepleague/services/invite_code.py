import secrets, string
# no 0/O or 1/I: codes get read aloud and typed from screenshots
ALPHABET = "".join(c for c in string.ascii_uppercase + string.digits if c not in "0O1I")

def generate_invite_code(length: int = 8) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))
