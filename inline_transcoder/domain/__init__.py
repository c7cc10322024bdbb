"""
This package contains the core domain models of the Inline Transcoder application.

The domain layer describes a conversion request and its outcome independently of
the network, the filesystem layout and the external encoder.

Modules:
    exceptions.py: The failure taxonomy. Every stage raises its own exception type
                   and the pipeline turns them into tagged results.
    media.py: Value objects for a request (`MediaRequest`, `SizeBudget`), for the
              strategy table (`EncodingTier`), for encoder runs (`TranscodeAttempt`)
              and for the outcome (`InlineMedia`, `TranscodeResult`).
    temp_models.py: `TempWorkspace`, the scoped temporary directory each request owns.
"""
