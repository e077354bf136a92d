"""Explorer Points: skill scoring, awards, streaks, celebrations and analytics."""
