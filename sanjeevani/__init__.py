"""Project package for the Sanjeevani hospital-operations backend."""
