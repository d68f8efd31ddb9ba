import os

# Token helpers read the secret at call time; tests never touch a real database.
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("JWT_ALGORITHM", "HS256")
