"""In-process realtime state: registry, rooms, capacity and in-flight markers."""
