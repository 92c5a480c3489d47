"""Process messaging: transport, retry and the process client."""
