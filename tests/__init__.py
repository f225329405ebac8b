"""
Labeler Test Suite

Test organization:
- unit/: Unit tests for tokenizer, dictionary, labels, matcher, session, documents
- integration/: SQLite repository and console tests
"""
