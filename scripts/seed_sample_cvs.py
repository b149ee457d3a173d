#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
from dataclasses import dataclass

import httpx


@dataclass(frozen=True)
class SeedCV:
    principal: str
    body: dict[str, object]


def build_seed_cvs() -> list[SeedCV]:
    return [
        SeedCV(
            principal="seed-user-ada",
            body={
                "title": "Backend Engineer",
                "template": "techpro",
                "cvLanguage": "en",
                "personalInfo": {
                    "fullName": "Ada Yilmaz",
                    "title": "Backend Engineer",
                    "email": "ada@example.com",
                    "phone": "+90 555 123 4567",
                    "location": "Istanbul",
                    "github": "https://github.com/ada-example",
                    "summary": "Builds reliable APIs and data pipelines.",
                },
                "workExperience": [
                    {
                        "company": "Example Corp",
                        "position": "Software Engineer",
                        "startDate": "2021-03",
                        "current": True,
                        "description": "Owns the billing service.",
                    }
                ],
                "skills": [
                    {"name": "Python", "level": "expert"},
                    {"name": "PostgreSQL", "level": "advanced"},
                ],
                "languages": [{"name": "English", "level": "fluent"}],
            },
        ),
        SeedCV(
            principal="seed-user-deniz",
            body={
                "title": "Product Designer",
                "template": "creative",
                "personalInfo": {
                    "fullName": "Deniz Kaya",
                    "title": "Product Designer",
                    "email": "deniz@example.com",
                    "phone": "+90 555 987 6543",
                    "location": "Izmir",
                    "website": "https://deniz.example.com",
                    "summary": "Designs calm interfaces for busy people.",
                },
                "education": [
                    {
                        "school": "Example University",
                        "degree": "BA",
                        "field": "Industrial Design",
                        "startDate": "2014",
                        "endDate": "2018",
                    }
                ],
                "projects": [
                    {
                        "name": "Transit app redesign",
                        "description": "Reworked trip planning flows.",
                        "technologies": ["Figma"],
                    }
                ],
            },
        ),
    ]


def seed_cv(client: httpx.Client, base_url: str, principal_header: str, seed: SeedCV) -> tuple[str, str]:
    try:
        response = client.post(
            f"{base_url.rstrip('/')}/api/v1/cvs",
            headers={principal_header: seed.principal},
            json=seed.body,
        )
    except httpx.HTTPError as exc:
        return ("error", f"request_failed: {exc}")

    if response.status_code == 201:
        return ("created", response.json()["cv"]["id"])

    detail = response.text
    try:
        detail = json.dumps(response.json(), indent=2)
    except ValueError:
        pass
    return ("error", f"status={response.status_code} detail={detail}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed CVForge with sample CVs")
    parser.add_argument(
        "--base-url",
        default="http://localhost:8000",
        help="CVForge API base URL (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--principal-header",
        default="X-Authenticated-User",
        help="Header carrying the authenticated user id (default: X-Authenticated-User)",
    )
    args = parser.parse_args()

    cvs = build_seed_cvs()
    print(f"Seeding {len(cvs)} sample CVs into {args.base_url}...")

    with httpx.Client(timeout=10) as client:
        for seed in cvs:
            outcome, info = seed_cv(client, args.base_url, args.principal_header, seed)
            print(f"- {seed.body['title']}: {outcome} ({info})")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
