from dojoqr.identity import CheckinIdentity


def test_repr_hides_token():
    identity = CheckinIdentity("loc-1", "super-secret-token", "Dojo Central", primary_color="#6d28d9")
    assert "super-secret-token" not in repr(identity)
    assert "Dojo Central" in repr(identity)


def test_with_token_copies():
    identity = CheckinIdentity("loc-1", "old", "Dojo")
    rotated = identity.with_token("new")
    assert rotated.checkin_token == "new"
    assert identity.checkin_token == "old"
    assert rotated.location_id == "loc-1"
