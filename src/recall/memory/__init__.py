"""
Memory module - tiered memory hierarchy.

Tiers:
- short-term: session context and message window (TTL cache)
- mid-term: episodic memories, recalled by vector similarity
  (ConversationSummarizer also files summaries of evicted messages here)
- long-term: scoped key/value memory (prefs, rules, knowledge, context) + user profile

Writes happen out of band: ExtractionScheduler debounces per session and
ExtractionWorker turns conversation into profile patches and episodic rows.
MemoryFusion composes the three tiers into prompt text.
"""
