"""Account credential lifecycle: storage, renewal, authorization and client caching."""
