import os

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite://")
TEST_START_TIME = "2026-01-05T09:00:00+00:00"

SIGNER_A = {"name": "Alice Sender", "email": "alice@example.com", "phone": "+12125550101"}
SIGNER_B = {"name": "Bob Counter", "email": "bob@example.com", "phone": "+12125550102"}
SIGNER_C = {"name": "Carol Witness", "email": "carol@example.com"}
