"""Transaction categorization for LedgerFlow.

Tiered pipeline, first success wins:
- User rules (keyword / regex / amount range, per user)
- Verified global patterns (aggregated across users)
- Similarity vote over the user's labeled examples (embeddings)

User corrections feed back into all three tiers (feedback.FeedbackLearner).
"""
