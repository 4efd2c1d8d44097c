"""Concurrent catalog crawler package.

Crawls a paginated product search API through several identity-isolated
sessions, collects product records per sub-category and the datasheet URLs
they reference, and hands finished batches to result sinks.

Key modules:
    transport   -- AnonymizingTransport and its identity providers (Tor, proxy pool)
    retry       -- RetryExecutor with pluggable classification and recovery
    categories  -- CategoryFetcher for the embedded category tree
    crawler     -- SubCategoryCrawler pagination state machine
    pool        -- JobQueue and WorkerPool
    collector   -- DatasheetCollector deduplicating URL set
    sink        -- ResultSink, JSON directory and search index sinks, batch import
    metrics     -- CrawlStats progress counters
    models      -- Category, SubCategory, ProductRecord and friends
    errors      -- error taxonomy
    factory     -- TransportFactory, one transport per worker
    config      -- CrawlConfig
    runner      -- CrawlRunner wiring a full run
"""
