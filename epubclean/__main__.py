from epubclean.cli import main

raise SystemExit(main())
