from services.purchase_events import LineItem, purchase_event_from_payment_object, unwrap_event


def test_checkout_session_uses_payment_intent_as_source():
    event = purchase_event_from_payment_object(
        {
            "object": "checkout.session",
            "id": "cs_123",
            "payment_intent": "pi_123",
            "customer_details": {"email": "Buyer@Example.com"},
            "line_items": {
                "data": [
                    {"price": {"id": "bulk10"}, "quantity": 2},
                    {"price": {"id": "addon", "product": {"metadata": {"credits_per_unit": "3"}}}},
                ]
            },
        }
    )

    assert event.source_id == "pi_123"
    assert event.payer_email == "Buyer@Example.com"
    assert event.line_items == [
        LineItem("bulk10", quantity=2),
        LineItem("addon", quantity=1, credits_per_unit=3),
    ]


def test_checkout_session_without_payment_intent_falls_back_to_session_id():
    event = purchase_event_from_payment_object(
        {"object": "checkout.session", "id": "cs_999", "customer_email": "a@b.co", "line_items": []}
    )
    assert event.source_id == "cs_999"
    assert event.payer_email == "a@b.co"
    assert event.line_items == []


def test_invoice_reads_lines():
    event = purchase_event_from_payment_object(
        {
            "object": "invoice",
            "id": "in_1",
            "customer_email": "invoice@example.com",
            "lines": {"data": [{"price": {"id": "bulk50", "metadata": {}}, "quantity": 1}]},
        }
    )
    assert event.source_id == "in_1"
    assert event.line_items[0].price_id == "bulk50"


def test_payment_intent_metadata_carries_user_and_price():
    event = purchase_event_from_payment_object(
        {"object": "payment_intent", "id": "pi_meta", "metadata": {"userId": "user-7", "priceId": "starter"}}
    )
    assert event.user_id == "user-7"
    assert event.line_items == [LineItem("starter")]


def test_payment_intent_without_price_is_ignored():
    assert purchase_event_from_payment_object({"object": "payment_intent", "id": "pi_x", "metadata": {}}) is None


def test_unrelated_objects_are_ignored():
    assert purchase_event_from_payment_object({"object": "customer", "id": "cus_1"}) is None


def test_unwrap_event_accepts_envelope_or_bare_object():
    bare = {"object": "invoice", "id": "in_2"}
    assert unwrap_event({"id": "evt_1", "data": {"object": bare}}) == bare
    assert unwrap_event(bare) == bare
