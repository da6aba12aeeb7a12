#!/usr/bin/env python3
from __future__ import annotations

from dotenv import load_dotenv
load_dotenv()

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from report_api.security import ROLES, JwtSecurityConfig, issue_token


def main() -> int:
    parser = argparse.ArgumentParser(description="Mint a bearer token for local API calls.")
    parser.add_argument("--username", required=True)
    parser.add_argument("--role", choices=ROLES, default="reader")
    args = parser.parse_args()

    data = issue_token(username=args.username, role=args.role, cfg=JwtSecurityConfig.from_env())
    print(json.dumps(data, ensure_ascii=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
