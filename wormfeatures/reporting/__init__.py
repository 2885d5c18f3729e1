"""Optional diagnostic output."""

from wormfeatures.reporting.figures import CurveFigureSink

__all__ = ['CurveFigureSink']
