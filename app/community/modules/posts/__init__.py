"""
Posts module: the scoped feed.

- Posts live in the global square (scope_id NULL) or a grade/section scope
- Likes (toggle), accuracy ratings (1-5, feed author credibility), comments
- Optional media attachment stored through the storage layer
"""
