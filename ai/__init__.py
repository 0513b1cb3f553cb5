"""
AI Scoring Module

Layer 3 of the candidate funnel: locked prompts, provider clients, response
cache and run-scoped cost accounting. AI output only ranks and annotates
candidates; capacity and decision gates remain the hard authority.
"""
