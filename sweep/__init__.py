"""
Paginated-data aggregation engine.

This package discovers where an open-ended, numbered-page data source ends,
fetches its pages concurrently under a cap, parses each page into records
and merges them in page order. Only one aggregation session is live at a
time; starting a new one cancels the old.

Typical use::

    from sweep.common.request_manager import AsyncRequestManager
    from sweep.driver.manager import SessionManager

    transport = AsyncRequestManager(url_template="https://example.org/?page={page}&id={key}")
    async with SessionManager(transport) as manager:
        result = await manager.aggregate("42")
"""
