#!/usr/bin/env python3
"""Generate a JWT for manual API testing.

The authentication middleware only honours tokens whose subject is a stored,
active user with the same role, so pass the email and role of a real account:

    python scripts/generate_test_token.py admin@example.com ADMIN 1
"""
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from types import SimpleNamespace

from src.core.auth import Role, issue_token

email = sys.argv[1] if len(sys.argv) > 1 else "admin@example.com"
role = Role.parse(sys.argv[2]) if len(sys.argv) > 2 else Role.ADMIN
user_id = int(sys.argv[3]) if len(sys.argv) > 3 else None

principal = SimpleNamespace(email=email, user_id=user_id, name=None, role=role)
print(f"{role.value} Token:\n{issue_token(principal)}")
