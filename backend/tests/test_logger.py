from shopee_engine.utils.logger import ShopeeConnectionLogger, mask_credentials


def test_nested_credentials_are_masked():
    masked = mask_credentials(
        {"Authorization": "Bearer abcdefghijkl", "body": {"refresh_token": "rt", "shop_id": 7}}
    )

    assert masked["Authorization"] == "Bear...ijkl"
    assert masked["body"] == {"refresh_token": "***", "shop_id": 7}


def test_ring_buffer_keeps_most_recent_events():
    log = ShopeeConnectionLogger(max_logs=2)
    for n in range(3):
        log.log_shopee_event("partner_api_request", f"call {n}", request_data={"shop_id": n})

    assert [e["description"] for e in log.get_logs()] == ["call 1", "call 2"]
    assert log.get_logs(limit=1)[0]["shop_id"] == 2
