"""Live b2g-info memory monitor for KaiOS/B2G devices."""
