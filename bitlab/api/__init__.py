"""HTTP surface for the scheduler, batches and result history."""
