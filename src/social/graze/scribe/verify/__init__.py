"""
Ownership Verification

This package confirms that a publication or document legitimately controls the
web location it claims. Two independent challenges are supported:

1. Publication challenge
   - The publication's site serves `/.well-known/site.standard.publication`
   - The body, trimmed, must equal the publication's record address

2. Document challenge
   - The document's page carries `<link rel="site.standard.document" href="...">`
   - The href, trimmed, must equal the document's record address

A document is verified when either challenge passes, publication first. Network
and parse errors count as a failed challenge and never propagate.
"""
