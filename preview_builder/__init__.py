"""
preview-builder: stages front-end projects, builds them with the
package-manager toolchain and serves the output as static previews.
"""
__version__ = "1.0.0"
