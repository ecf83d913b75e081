"""
Profiles module.

- Public profile, own-profile edits, hobbies and tendency charts
- Peer ratings (15 metrics, one rating per rater/rated pair)
- Profile comments
- Credibility / reputation scoring shared with posts and events
"""
