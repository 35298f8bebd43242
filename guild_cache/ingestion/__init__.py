"""Remote data sources for the guild cache.

Modules
-------
hypixel_client  — HypixelClient: guild-by-player and SkyBlock profile lookups
"""
