"""Core modules of Detection-Refinery.

- geometry: shapes and the predicates detection groups rely on
- hierarchy: annotations, detections and the tree holding them
- spatial_index: bounding volume hierarchy for centroid-in-shape queries
- detections: detection groups, container reconciliation and classification
- histogram: channel histograms and automatic detection thresholds
- errors: exceptions raised by all of the above
"""
