"""Fixtures for pure domain tests: aggregates built without a database."""

from decimal import Decimal

import pytest

from transfer_kernel.domain import transfer

from tests.conftest import TEST_ACTOR_ID


@pytest.fixture
def submitted_request(make_request, advance):
    request = make_request()
    return transfer.submit(request, actor_id=TEST_ACTOR_ID, at=advance()).request


@pytest.fixture
def approved_request(submitted_request, advance):
    """Single line: requested 100, approved 60."""
    item_id = submitted_request.items[0].id
    return transfer.approve(
        submitted_request, {item_id: Decimal("60")}, actor_id="approver", at=advance(),
    ).request
