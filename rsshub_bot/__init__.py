"""Poll RSSHub feeds and forward new items to a Telegram chat."""
