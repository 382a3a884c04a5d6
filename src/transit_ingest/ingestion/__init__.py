"""
Pipelines for ingesting transit data into a relational store. A GTFS
Realtime vehicle position feed is polled every cycle and written as a time
series, and a GTFS static bundle is streamed occasionally with each of its
files replacing a table.
"""
