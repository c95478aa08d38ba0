"""Seed the development database with a demo client and a month of visits."""

import os

from app.backend.src.db import Base, get_engine, session_scope
from app.backend.src.services.seed import DEFAULT_BRANCH_ID, DEFAULT_ORGANIZATION_ID, seed_demo_client


def main() -> None:
    """Create tables (if needed) and ensure the demo client exists."""

    engine = get_engine()
    Base.metadata.create_all(bind=engine)

    organization_id = os.environ.get("DEMO_ORGANIZATION_ID", DEFAULT_ORGANIZATION_ID)
    branch_id = os.environ.get("DEMO_BRANCH_ID", DEFAULT_BRANCH_ID)

    with session_scope() as session:
        result = seed_demo_client(session, organization_id=organization_id, branch_id=branch_id)
        session.flush()

        print("Development data ready!")
        client_status = "created" if result.client_created else "unchanged"
        print(
            f"Client ({client_status}): {result.client.full_name} [id={result.client.id}, "
            f"organization={organization_id}, branch={branch_id}]"
        )
        if result.visits_created:
            print(f"Added {result.visits_created} completed visits")
        print()
        print(
            "Generate invoices with POST /api/billing/period-invoices using this "
            "organization and branch."
        )


if __name__ == "__main__":
    main()
